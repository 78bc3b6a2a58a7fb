import argparse
import json
from pathlib import Path

from . import __version__
from .client import ApiClient, AstroMatchError, handle_api_error
from .config import load_settings
from .engine import RemoteComputeClient
from .env import load_env
from .logger import get_logger
from .normalize import normalize, unwrap_stored_row
from .profiles import ProfileQuery, http_page_fetcher
from .resolver import ScoreResolver, request_score
from .storage import SqlScoreRepository


def _split_ids(raw: str) -> list:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


def _print_result(candidate_id: str, result) -> None:
    breakdown = ", ".join(f"{k.value}={v}" for k, v in result.breakdown.items())
    label = "good match" if result.is_good_match else "low match"
    print(
        f"[{candidate_id}] {result.total_gunas}/{result.max_gunas} "
        f"({result.match_percentage}%, {label}) {result.verdict}".rstrip()
    )
    print(f"  {breakdown}")


def cmd_normalize(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        raw = json.load(f)

    result = normalize(unwrap_stored_row(raw))
    if result is None:
        print("Rejected")
        raise SystemExit(2)
    out = result.to_dict()
    out["match_percentage"] = result.match_percentage
    print(json.dumps(out, indent=2, ensure_ascii=False))


def cmd_resolve(args: argparse.Namespace) -> None:
    settings = load_settings()
    viewer_id = args.viewer or settings.viewer_id
    if not viewer_id:
        raise SystemExit("No viewer id. Pass --viewer or set ASTROMATCH_VIEWER_ID.")
    candidates = _split_ids(args.candidates)
    if not candidates:
        raise SystemExit("No candidates specified. Use --candidates \"id1,id2\"")

    store = SqlScoreRepository(Path(args.db) if args.db else settings.db_path)
    client = ApiClient(args.api_base or settings.api_base_url)
    resolver = ScoreResolver(
        store,
        RemoteComputeClient(client),
        max_workers=args.workers or settings.max_workers,
    )

    results = resolver.resolve_all(viewer_id, candidates)
    for cid in candidates:
        result = results.get(cid)
        if result is None:
            print(f"[{cid}] score not available yet")
        else:
            _print_result(cid, result)
    print(f"Done. resolved={len(results)} missing={len(set(candidates)) - len(results)}")
    get_logger().log_metrics_summary()


def cmd_profiles(args: argparse.Namespace) -> None:
    settings = load_settings()
    client = ApiClient(args.api_base or settings.api_base_url)
    with ProfileQuery(http_page_fetcher(client, args.limit or settings.page_size), prefetch=False) as query:
        state = query.load(args.page)
    if state.is_error:
        raise SystemExit(f"Error: {state.message}")
    page = state.data
    if state.is_empty:
        print("No profiles on this page.")
        return
    print(f"Page {page.page} ({len(page.items)} of {page.total}){' more available' if page.has_more else ''}:\n")
    for profile in page.items:
        print(f"ID: {profile.id}")
        print(f"  Name: {profile.name}")
        print(f"  Born: {profile.birth_date or '?'} {profile.birth_time or ''} {profile.birth_place or ''}".rstrip())
        print()


def cmd_score(args: argparse.Namespace) -> None:
    settings = load_settings()
    client = ApiClient(args.api_base or settings.api_base_url)
    try:
        result = request_score(client, args.profile, debounce=0)
    except AstroMatchError as e:
        raise SystemExit(handle_api_error(e, "Failed to load score"))
    if result is None:
        print(f"[{args.profile}] score not available yet")
        return
    _print_result(args.profile, result)


def main(argv=None):
    # Load .env if present (ASTROMATCH_API_BASE_URL, ASTROMATCH_DB_PATH, etc.)
    load_env()
    get_logger(level=load_settings().log_level)
    parser = argparse.ArgumentParser(prog="astromatch", description="Ashta Koota compatibility resolution CLI")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    nrm = subparsers.add_parser("normalize", help="Normalize a raw compatibility payload JSON")
    nrm.add_argument("--input", required=True, help="Path to payload JSON (stored row or engine response)")
    nrm.set_defaults(func=cmd_normalize)

    res = subparsers.add_parser("resolve", help="Resolve scores for a viewer against candidate ids")
    res.add_argument("--viewer", help="Viewer user id (or set ASTROMATCH_VIEWER_ID)")
    res.add_argument("--candidates", required=True, help="Comma-separated candidate user ids")
    res.add_argument("--db", help="Path to SQLite score store (default: ASTROMATCH_DB_PATH or data/astromatch.db)")
    res.add_argument("--workers", type=int, help="Resolve candidates concurrently with N workers")
    res.add_argument("--api-base", help="Backend base URL (or set ASTROMATCH_API_BASE_URL)")
    res.set_defaults(func=cmd_resolve)

    prf = subparsers.add_parser("profiles", help="Show one page of candidate profiles")
    prf.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    prf.add_argument("--limit", type=int, help="Page size (default: ASTROMATCH_PAGE_SIZE or 20)")
    prf.add_argument("--api-base", help="Backend base URL (or set ASTROMATCH_API_BASE_URL)")
    prf.set_defaults(func=cmd_profiles)

    scr = subparsers.add_parser("score", help="Fetch the score against a single profile")
    scr.add_argument("--profile", required=True, help="Profile id")
    scr.add_argument("--api-base", help="Backend base URL (or set ASTROMATCH_API_BASE_URL)")
    scr.set_defaults(func=cmd_score)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
