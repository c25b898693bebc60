from pyopendata.cli import main

raise SystemExit(main())
