import sys
from ldap_provision.main import main

sys.exit(main())
