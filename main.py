from __future__ import annotations

from media_intake import main

if __name__ == "__main__":
    main()
