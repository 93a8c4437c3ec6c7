"""`python -m exec_staged` で CLI を起動する。"""

from __future__ import annotations

from exec_staged.cli import main

if __name__ == "__main__":
    main()
