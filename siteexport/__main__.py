from siteexport.cli import main

main()
