from smsrelay.main import run

run()
