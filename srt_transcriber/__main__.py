"""Package entry point for ``python -m srt_transcriber``.

RULES:
- ``--api`` starts the HTTP API (same as the srt-transcriber-api script)
- Without ``--api``, falls through to the CLI
"""

import sys

if __name__ == "__main__":
    if "--api" in sys.argv:
        from srt_transcriber.server.app import run_api
        run_api()
    else:
        from srt_transcriber.cli import main
        main()
