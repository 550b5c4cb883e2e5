from clicksilog import create_app

app = create_app()
