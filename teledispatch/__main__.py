from teledispatch.daemon import main

main()
