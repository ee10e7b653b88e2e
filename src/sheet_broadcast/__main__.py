from sheet_broadcast.main import main

raise SystemExit(main())
