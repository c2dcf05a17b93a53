from optisync.cli.app import run

run()
