"""DeepDive - tiered research engine

Simple CLI for running a query through the router and printing streamed events.
"""

import argparse
import asyncio

from deepdive.errors import RoutingError
from deepdive.models.research import Query
from deepdive.services.container import build_engine
from deepdive.services.logger import configure_logging


async def run_query(query: str, locale: str = "en", session_id: str | None = None):
    """Route `query`, run it, and print every event as it arrives."""
    print(f"Query: {query}")
    print("-" * 50)

    engine = build_engine()
    try:
        q = Query(text=query, locale=locale)
        try:
            decision = await engine.conversation.route(q)
        except RoutingError as exc:
            print(f"[!] {exc}")
            return

        events = engine.conversation.dispatch(q, decision, session_id)
        async for event in engine.emitter.wrap(events, session_id):
            event_type = event.event.value
            data = event.data

            if event_type == "tier_selected":
                print(f"[*] Tier: {data.get('tier')} ({data.get('reason')})")
                if data.get("session_id"):
                    print(f"    Session: {data['session_id']}")

            elif event_type == "stage_update":
                stage = data.get("stage")
                if data.get("source"):
                    if data.get("status") == "completed":
                        ok = "+" if data.get("success") else "x"
                        print(f"  [{ok}] {data['source']}: {data.get('count')} results in {data.get('duration_ms')}ms")
                elif stage == "deciding":
                    print(f"  [~] {data.get('reason')}")
                else:
                    round_no = f" (round {data['round']})" if data.get("round") else ""
                    print(f"\n[~] {stage}{round_no}")

            elif event_type == "token":
                print(data.get("text", ""), end="", flush=True)

            elif event_type == "completed":
                print(f"\n\n[*] Done{' (partial)' if data.get('partial') else ''}")
                if data.get("runtime_ms") is not None:
                    print(f"   Runtime: {data['runtime_ms']}ms")
                sources = data.get("sources", [])
                print(f"   Sources: {len(sources)}")
                for source in sources[:10]:
                    print(f"   - [{source.get('id', source.get('session_id'))}] {source.get('title')}")

            elif event_type == "error":
                print(f"\n[!] Error: {data.get('message', 'Unknown error')}")
    finally:
        await engine.aclose()


def main():
    parser = argparse.ArgumentParser(description="DeepDive research engine")
    parser.add_argument("--query", "-q", required=True, help="Question to research")
    parser.add_argument("--locale", "-l", default="en", help="Query locale, e.g. en or tr")
    parser.add_argument("--session", "-s", help="Continue an existing session id")
    parser.add_argument("--log-level", default=None, help="Console log level, e.g. DEBUG")

    args = parser.parse_args()
    if args.log_level:
        configure_logging(level=args.log_level)

    asyncio.run(run_query(args.query, args.locale, args.session))


if __name__ == "__main__":
    main()
