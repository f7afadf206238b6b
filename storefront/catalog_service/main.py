# storefront/catalog_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Catalog Service (dev mock)")


ITEMS = {
    1: {"id": 1, "name": "House Blend 250g", "price": "12.50"},
    2: {"id": 2, "name": "Single Origin Ethiopia 250g", "price": "16.00"},
    3: {"id": 3, "name": "Decaf Colombia 250g", "price": "13.75"},
    7: {"id": 7, "name": "Espresso Roast 1kg", "price": "24.99"},
}


@app.get("/items/{item_id}")
def get_item(item_id: int):
    item = ITEMS.get(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item
