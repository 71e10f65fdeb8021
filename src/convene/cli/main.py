import argparse

import uvicorn


def main(argv=None):
    parser = argparse.ArgumentParser(prog="convene", description="Run the convene scheduling API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="restart on code changes (development)")
    args = parser.parse_args(argv)

    uvicorn.run(
        "convene.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
