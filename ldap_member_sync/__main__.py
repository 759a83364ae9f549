from ldap_member_sync.main import main

main()
