from mageworker.main import run

run()
