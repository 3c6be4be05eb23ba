from passenger_exporter.exporter_app import main

main()
