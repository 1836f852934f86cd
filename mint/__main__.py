from mint.cli import main

raise SystemExit(main())
