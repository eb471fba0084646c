from p4pp import main

raise SystemExit(main())
