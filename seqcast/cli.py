from __future__ import annotations
import argparse, logging, sys
from typing import Iterator, List, Optional
import httpx

from seqcast.settings import Settings

DEFAULT_URL = "http://127.0.0.1:3000"

def push_values(url: str = DEFAULT_URL,
                count: int = 1,
                timeout: float = 10.0,
                client: Optional[httpx.Client] = None) -> List[bool]:
    close_client = False
    if client is None:
        client = httpx.Client(timeout=timeout)
        close_client = True

    try:
        results: List[bool] = []
        for _ in range(count):
            resp = client.post(url.rstrip("/") + "/push")
            resp.raise_for_status()
            results.append(bool(resp.json().get("ok")))
        return results
    finally:
        if close_client:
            client.close()

def tail_values(url: str = DEFAULT_URL,
                limit: Optional[int] = None,
                client: Optional[httpx.Client] = None) -> Iterator[int]:
    """
    Yields values from the /subscribe event stream. An `event: lagged` frame
    is reported on stderr and not yielded.
    """
    close_client = False
    if client is None:
        client = httpx.Client(timeout=httpx.Timeout(10.0, read=None))
        close_client = True

    params = {"limit": limit} if limit is not None else None
    try:
        with client.stream("GET", url.rstrip("/") + "/subscribe", params=params) as resp:
            resp.raise_for_status()
            event = "message"
            for line in resp.iter_lines():
                if not line:
                    event = "message"
                elif line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data = line[len("data:"):].strip()
                    if event == "lagged":
                        print(f"[lagged] {data} value(s) skipped", file=sys.stderr)
                    else:
                        yield int(data)
    finally:
        if close_client:
            client.close()

def positive_int(text: str) -> int:
    n = int(text)
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a value of at least 1, got {n}")
    return n

def serve(settings: Settings) -> None:
    import uvicorn
    from seqcast.main import create_app

    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT,
                log_level=settings.LOG_LEVEL.lower())

def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Sequence broadcaster")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    sub = p.add_subparsers(dest="cmd", required=True)

    servep = sub.add_parser("serve", help="Run the HTTP server")
    servep.add_argument("--host", default=None)
    servep.add_argument("--port", type=int, default=None)
    servep.add_argument("--capacity", type=int, default=None, help="Per-subscriber buffer size")
    servep.add_argument("--initial-value", type=int, default=None)
    servep.add_argument("--lag-policy", choices=["skip", "raise"], default=None)

    pushp = sub.add_parser("push", help="Advance the sequence")
    pushp.add_argument("--url", default=DEFAULT_URL)
    pushp.add_argument("--count", type=positive_int, default=1)

    tailp = sub.add_parser("tail", help="Print values as they are pushed")
    tailp.add_argument("--url", default=DEFAULT_URL)
    tailp.add_argument("--limit", type=positive_int, default=None)

    args = p.parse_args(argv)

    overrides = {}
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level.upper()
    if args.cmd == "serve":
        for field, value in (("HOST", args.host), ("PORT", args.port), ("CAPACITY", args.capacity),
                             ("INITIAL_VALUE", args.initial_value), ("LAG_POLICY", args.lag_policy)):
            if value is not None:
                overrides[field] = value
    settings = Settings(**overrides)
    logging.basicConfig(level=settings.LOG_LEVEL.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.cmd == "serve":
        serve(settings)
    elif args.cmd == "push":
        results = push_values(args.url, args.count)
        print(f"Pushed {len(results)} value(s); ok={all(results)}")
    elif args.cmd == "tail":
        try:
            for value in tail_values(args.url, args.limit):
                print(value, flush=True)
        except KeyboardInterrupt:
            pass
    return 0

if __name__ == "__main__":
    sys.exit(main())
