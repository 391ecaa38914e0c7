from ronin_onvif.worker import main

main()
