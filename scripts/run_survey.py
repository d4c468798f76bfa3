import argparse
import logging

from survey_explorer.engine.orchestrator import run_survey_blocking


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", required=True, help="Survey URL to explore")
    parser.add_argument("--verbose", action="store_true", help="Log engine events at DEBUG level")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    result = run_survey_blocking(args.url)
    fields = sum(len(page.fields) for page in result.pages)
    print(f"Survey walk finished: status={result.status} reason={result.status_reason} pages={len(result.pages)} fields={fields}")


if __name__ == "__main__":
    main()
