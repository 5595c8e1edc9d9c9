from app.loyalty import create_app

app = create_app()
