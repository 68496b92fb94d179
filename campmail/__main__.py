from campmail.cli import main

raise SystemExit(main())
