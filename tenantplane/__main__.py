from tenantplane.cli import main

main()
