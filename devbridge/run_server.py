import argparse
import os

import uvicorn


def main(argv=None):
    parser = argparse.ArgumentParser(description="Local bridge between the browser editor and gopls, dlv and built programs")
    parser.add_argument("--dir", default=os.getenv("DEVBRIDGE_ROOT", "."), help="Root directory to serve files from")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "9090")), help="Port to serve on")
    parser.add_argument("--restrict-nav", action="store_true", help="Restrict file navigation to the root directory")
    args = parser.parse_args(argv)

    root = os.path.abspath(args.dir)
    if not os.path.isdir(root):
        parser.error(f"Root directory does not exist: {root}")

    # settings are read from the environment when the app module is imported
    os.environ["DEVBRIDGE_ROOT"] = root
    os.environ["PORT"] = str(args.port)
    if args.restrict_nav:
        os.environ["DEVBRIDGE_RESTRICT_NAV"] = "1"

    uvicorn.run(
        "devbridge.main:app",
        host="127.0.0.1",
        port=args.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
