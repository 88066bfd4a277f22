# storefront/catalog_service/main.py
from fastapi import FastAPI

app = FastAPI(title="Catalog Service (dev mock)")


PRODUCTS = {
    "1": {
        "externalId": "1",
        "name": "Keyboard",
        "image": "/img/keyboard.png",
        "price": 199.99,
        "availableQuantity": 12,
        "category": "peripherals",
        "brand": "Keyco",
        "unit": "pcs",
    },
    "2": {
        "externalId": "2",
        "name": "Mouse",
        "image": "/img/mouse.png",
        "price": 49.50,
        "availableQuantity": 30,
        "category": "peripherals",
        "brand": "Keyco",
        "unit": "pcs",
    },
    "3": {
        "externalId": "3",
        "name": "Monitor",
        "image": "/img/monitor.png",
        "price": 899.00,
        "availableQuantity": 0,
        "category": "displays",
        "brand": "Viewly",
        "unit": "pcs",
    },
}


@app.get("/products")
def list_products():
    return {"items": list(PRODUCTS.values())}

