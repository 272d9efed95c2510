from watchlist_sync.cli import main

raise SystemExit(main())
