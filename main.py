"""
main.py
Main entry point of application that initializes the FastAPI app and includes all endpoints
"""

import time
from datetime import datetime
from fastapi import FastAPI
from config import AppConfig
from routers import (
    register,
    login,
    profile,
    delete_account,
    users,
    friends,
    barter,
    chat,
    subscription,
    store,
    revenuecat,
    webhooks,
    cron,
)

START_TIME = time.time()

# Initialize FastAPI app and router for endpoints
app = FastAPI(title=f"{AppConfig.APP_NAME} API")

# Include routers for endpoints in FastAPI app
app.include_router(register.router)
app.include_router(login.router)
app.include_router(profile.router)
app.include_router(delete_account.router)
app.include_router(users.router)
app.include_router(friends.router)
app.include_router(barter.router)
app.include_router(chat.router)
app.include_router(subscription.router)
app.include_router(store.router)
app.include_router(revenuecat.router)
app.include_router(webhooks.router)
app.include_router(cron.router)


@app.get("/")
def root():
    return {"message": f"{AppConfig.APP_NAME} API is running"}


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": time.time() - START_TIME,
    }


# Run FastAPI on local host
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

    # uvicorn main:app --host 0.0.0.0 --port 8000   # in terminal for device testing
