# API routes
from src.api.routes import health
from src.api.routes import auth
from src.api.routes import subscription
from src.api.routes import payments
from src.api.routes import webhooks_stripe
from src.api.routes import premium
