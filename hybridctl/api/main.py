from fastapi import FastAPI
from hybridctl.api.routes import phases, validate
from hybridctl.api.middleware import AuthMiddleware
from dotenv import load_dotenv

load_dotenv()
app = FastAPI(title="hybridctl", description="Pipeline status and validation reports for CI")
app.add_middleware(AuthMiddleware)

app.include_router(phases.router)
app.include_router(validate.router)
