import sys

from ubuntu_usb_creator.main import main


sys.exit(main())
