TOKEN_STORAGE_KEY = "tablecrm_token"

ENDPOINTS = {
    "clients": "/api/v1/contragents/",
    "warehouses": "/api/v1/warehouses/",
    "payboxes": "/api/v1/payboxes/",
    "organizations": "/api/v1/organizations/",
    "price_types": "/api/v1/price_types/",
    "products": "/api/v1/nomenclature/",
    "sales": "/api/v1/docs_sales/",
}

# справочники, которые должна ссылаться продажа (порядок = порядок в форме)
REFERENCE_KINDS = ("payboxes", "organizations", "warehouses", "price_types")

REFERENCE_TITLES = {
    "payboxes": "Счет / касса",
    "organizations": "Организация",
    "warehouses": "Склад",
    "price_types": "Тип цены",
}

# поле выбора -> справочник
SELECTION_FIELDS = {
    "organization_id": "organizations",
    "paybox_id": "payboxes",
    "warehouse_id": "warehouses",
    "price_type_id": "price_types",
}

MODE_DRAFT = "draft"
MODE_COMPLETE = "complete"
SUBMIT_MODES = (MODE_DRAFT, MODE_COMPLETE)

CLIENT_SEARCH_DEBOUNCE = 0.5
PRODUCT_SEARCH_DEBOUNCE = 0.3
MIN_SEARCH_LENGTH = 2

MOCK_DELAY = 0.4
MOCK_SUBMIT_DELAY = 0.6
