import argparse
import json
import os

os.environ.setdefault("BOOTSTRAP_JOBS_ON_IMPORT", "0")

from app import app, build_dispatcher, default_occasion
from reminder_occasions import Channel, Occasion


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one reminder dispatch (what the cron triggers do).")
    parser.add_argument("--occasion", choices=[o.value for o in Occasion], default=None,
                        help="Occasion to render; defaults to the slot for the current local hour")
    parser.add_argument("--channel", action="append", choices=[c.value for c in Channel],
                        help="Channel to deliver on; repeat for several (default: all)")
    args = parser.parse_args()

    with app.app_context():
        occasion = Occasion.parse(args.occasion) if args.occasion else default_occasion()
        result = build_dispatcher().run(
            app.config.get("NOTIFICATION_API_KEY"),
            occasion,
            Channel.parse_many(args.channel),
        )
    print(json.dumps(result.to_dict(), indent=2))
    raise SystemExit(0 if result.status_code == 200 else 1)


if __name__ == "__main__":
    main()
