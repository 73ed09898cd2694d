# relay/__main__.py
from relay.main import main

raise SystemExit(main())
