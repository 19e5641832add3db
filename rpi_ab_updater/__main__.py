from rpi_ab_updater.main import main

raise SystemExit(main())
