from authlib.integrations.flask_client import OAuth

oauth = OAuth()

def init_oauth(app):
    """Initialize OAuth with the OpenID Connect identity provider."""
    oauth.init_app(app)
    oauth.register(
        name='identity',
        client_id=app.config["IDP_CLIENT_ID"],
        client_secret=app.config["IDP_CLIENT_SECRET"],
        server_metadata_url=app.config["IDP_DISCOVERY_URL"],
        client_kwargs={
            'scope': 'openid email profile'
        },
    )
