from mastotg.manage import run

run()
