from kalligram import create_app

app = create_app()
