import sys

from dotenv import load_dotenv

from database import ConfigError, ask_connection_config, load_saved_connections, save_connection_config
from settings import load_settings
from ui import browse_connections_ui_once
from utils import print_header

load_dotenv()


def main() -> None:
    try:
        settings = load_settings()
        # read once up front so a broken file stops us before the screen opens
        load_saved_connections()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print_header("dbnav - terminal database browser")

    while True:
        result = browse_connections_ui_once(settings)
        if result == "add":
            cfg = ask_connection_config()
            save_connection_config(cfg)
            # loop continues and reopens the connection list
            continue
        else:
            break


if __name__ == "__main__":
    main()
