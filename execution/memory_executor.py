"""
In-memory reference executor.

Implements the executor contract over plain dicts so the CLI and tests can
run whole dialogues without a record store. It also serves the supplier
list for dependency checks. Not a data layer: nothing is persisted.
"""

import logging
from typing import Any, Awaitable, Callable

from shared.models import ExecutorResult

logger = logging.getLogger(__name__)

LOW_STOCK_DEFAULT_THRESHOLD = 5

Handler = Callable[[dict[str, Any]], Awaitable[ExecutorResult]]


def _key(value: Any) -> str:
    return str(value or "").strip().lower()


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fail(message: str) -> ExecutorResult:
    return ExecutorResult(success=False, message=message)


class InMemoryCommandExecutor:
    """Catalogue, stock, suppliers, customers and jobs held in memory."""

    def __init__(self, seed: bool = True):
        self.products: dict[str, dict[str, Any]] = {}
        self.stock: list[dict[str, Any]] = []
        self.suppliers: list[dict[str, Any]] = []
        self.customers: list[dict[str, Any]] = []
        self.jobs: list[dict[str, Any]] = []
        self.executed: list[tuple[str, dict[str, Any]]] = []

        self._handlers: dict[str, Handler] = {
            "ADD_STOCK": self._add_stock,
            "REMOVE_STOCK": self._remove_stock,
            "TRANSFER_STOCK": self._transfer_stock,
            "COUNT_STOCK": self._count_stock,
            "SEARCH_STOCK": self._search_stock,
            "LOW_STOCK_REPORT": self._low_stock_report,
            "ADD_PRODUCT": self._add_product,
            "SEARCH_CATALOGUE": self._search_catalogue,
            "CREATE_CATALOGUE_ITEM_AND_ADD_STOCK": self._create_item_and_add_stock,
            "CREATE_CATALOGUE_ITEM_WITH_DETAILS": self._create_item_with_details,
            "ADD_SUPPLIER": self._add_supplier,
            "ADD_CUSTOMER": self._add_customer,
            "SEARCH_CUSTOMERS": self._search_customers,
            "CREATE_JOB": self._create_job,
            "SEARCH_JOBS": self._search_jobs,
            "QUERY_INVENTORY": self._query_inventory,
        }
        if seed:
            self._seed()

    def _seed(self) -> None:
        for name in ("Acme Corp", "City Electrical"):
            self.suppliers.append({"name": name})
        self.customers.append({"name": "ABC Heating"})
        for part, name, cost, min_qty in (
            ("M10-NUT", "M10 nuts", 0.12, 50),
            ("BRG-6204", "bearings", 4.5, 10),
            ("FLT-100", "filters", 8.0, 5),
        ):
            self.products[_key(part)] = {
                "partNumber": part,
                "name": name,
                "unitCost": cost,
                "minQuantity": min_qty,
            }
        self.stock.extend(
            [
                {"partNumber": "M10-NUT", "location": "rack 1 bin 6", "quantity": 20},
                {"partNumber": "BRG-6204", "location": "warehouse", "quantity": 50},
                {"partNumber": "FLT-100", "location": "van", "quantity": 4},
            ]
        )

    # ─── Contract ─────────────────────────────────────────────

    async def execute(self, action: str, parameters: dict[str, Any]) -> ExecutorResult:
        handler = self._handlers.get(action)
        if handler is None:
            return _fail(f"Action {action} is not supported by the in-memory executor")
        self.executed.append((action, dict(parameters)))
        logger.debug("In-memory execute %s %s", action, parameters)
        return await handler(parameters)

    async def refresh(self) -> None:
        return None

    def supplier_names(self) -> list[str]:
        return [s["name"] for s in self.suppliers]

    # ─── Lookups ──────────────────────────────────────────────

    def _find_product(self, *candidates: Any) -> dict[str, Any] | None:
        for candidate in candidates:
            wanted = _key(candidate)
            if not wanted:
                continue
            if wanted in self.products:
                return self.products[wanted]
            for product in self.products.values():
                if _key(product["name"]) == wanted:
                    return product
        return None

    def _stock_row(self, part_number: str, location: str) -> dict[str, Any] | None:
        for row in self.stock:
            if _key(row["partNumber"]) == _key(part_number) and _key(row["location"]) == _key(location):
                return row
        return None

    def _customer_exists(self, name: Any) -> bool:
        return any(_key(c["name"]) == _key(name) for c in self.customers)

    def _product_matches(self, product: dict[str, Any], term: str) -> bool:
        return term in _key(product["partNumber"]) or term in _key(product["name"])

    # ─── Stock ────────────────────────────────────────────────

    async def _add_stock(self, params: dict[str, Any]) -> ExecutorResult:
        item = params.get("item") or params.get("partNumber")
        quantity = _number(params.get("quantity"))
        location = str(params.get("location") or "").strip()
        if not item or quantity is None or quantity <= 0 or not location:
            return _fail("Invalid part number or quantity")

        product = self._find_product(params.get("partNumber"), item)
        if product is None:
            return ExecutorResult(
                success=False,
                message=f'"{item}" is not in the catalogue.',
                needs_input=True,
                prompt=f'"{item}" is not in the catalogue yet. Would you like to create it now?',
                options=["Yes", "No"],
                pending_action="CONFIRM_CREATE_CATALOGUE_ITEM",
                context={
                    "item": item,
                    "name": item,
                    "partNumber": params.get("partNumber") or item,
                    "quantity": quantity,
                    "location": location,
                },
            )
        return ExecutorResult(success=True, message=self._put_stock(product, quantity, location))

    def _put_stock(self, product: dict[str, Any], quantity: float, location: str) -> str:
        row = self._stock_row(product["partNumber"], location)
        if row is None:
            row = {"partNumber": product["partNumber"], "location": location, "quantity": 0}
            self.stock.append(row)
        row["quantity"] += quantity
        return (
            f"Added {quantity:g} units to {product['partNumber']} at {location}. "
            f"New total: {row['quantity']:g}"
        )

    async def _remove_stock(self, params: dict[str, Any]) -> ExecutorResult:
        item = params.get("item") or params.get("partNumber")
        quantity = _number(params.get("quantity"))
        if not item or quantity is None or quantity <= 0:
            return _fail("Invalid part number or quantity")
        product = self._find_product(params.get("partNumber"), item)
        if product is None:
            return _fail(f"Part {item} not found")

        location = params.get("location")
        rows = [r for r in self.stock if _key(r["partNumber"]) == _key(product["partNumber"])]
        if location:
            rows = [r for r in rows if _key(r["location"]) == _key(location)]
        if not rows:
            return _fail(f"Part {product['partNumber']} not found at {location}")
        row = rows[0]
        if row["quantity"] < quantity:
            return _fail(f"Insufficient quantity. Only {row['quantity']:g} units available at {row['location']}")

        row["quantity"] -= quantity
        if row["quantity"] == 0:
            self.stock.remove(row)
            return ExecutorResult(
                success=True,
                message=f"Removed all {quantity:g} units of {product['partNumber']} from {row['location']}. Item deleted.",
            )
        return ExecutorResult(
            success=True,
            message=(
                f"Removed {quantity:g} units of {product['partNumber']} from {row['location']}. "
                f"{row['quantity']:g} remaining."
            ),
        )

    async def _transfer_stock(self, params: dict[str, Any]) -> ExecutorResult:
        item = params.get("item") or params.get("partNumber")
        quantity = _number(params.get("quantity"))
        from_location = params.get("fromLocation")
        to_location = params.get("toLocation")
        if not item or quantity is None or quantity <= 0 or not from_location or not to_location:
            return _fail("Missing required parameters for move operation")
        product = self._find_product(params.get("partNumber"), item)
        source = self._stock_row(product["partNumber"], from_location) if product else None
        if source is None:
            return _fail(f"Part {item} not found at {from_location}")
        if source["quantity"] < quantity:
            return _fail(f"Cannot move {quantity:g} units. Only {source['quantity']:g} available at {from_location}")

        source["quantity"] -= quantity
        if source["quantity"] == 0:
            self.stock.remove(source)
        self._put_stock(product, quantity, str(to_location))
        return ExecutorResult(
            success=True,
            message=f"Moved {quantity:g} units of {product['partNumber']} from {from_location} to {to_location}",
        )

    async def _count_stock(self, params: dict[str, Any]) -> ExecutorResult:
        item = params.get("item") or params.get("partNumber")
        quantity = _number(params.get("countedQuantity", params.get("quantity")))
        location = params.get("location")
        if not item or quantity is None or quantity < 0 or not location:
            return _fail("Invalid part number or quantity")
        product = self._find_product(params.get("partNumber"), item)
        if product is None:
            return _fail(f"Part {item} not found")
        row = self._stock_row(product["partNumber"], location)
        if row is None:
            row = {"partNumber": product["partNumber"], "location": location, "quantity": 0}
            self.stock.append(row)
        row["quantity"] = quantity
        return ExecutorResult(
            success=True,
            message=f"Updated {product['partNumber']} quantity to {quantity:g} at {location}",
        )

    async def _search_stock(self, params: dict[str, Any]) -> ExecutorResult:
        term = _key(params.get("search"))
        location = _key(params.get("location"))
        rows = []
        for row in self.stock:
            product = self.products.get(_key(row["partNumber"]), {"partNumber": row["partNumber"], "name": ""})
            if term and not self._product_matches(product, term):
                continue
            if location and _key(row["location"]) != location:
                continue
            rows.append({"partNumber": row["partNumber"], "name": product["name"], "location": row["location"], "quantity": row["quantity"]})
        if not rows:
            return ExecutorResult(success=True, message=f'No items found matching "{params.get("search", "")}"', data=[])
        return ExecutorResult(success=True, message=f"Found {len(rows)} items", data=rows)

    async def _low_stock_report(self, params: dict[str, Any]) -> ExecutorResult:
        location = _key(params.get("location"))
        report = []
        for product in self.products.values():
            rows = [r for r in self.stock if _key(r["partNumber"]) == _key(product["partNumber"])]
            if location:
                rows = [r for r in rows if _key(r["location"]) == location]
            total = sum(r["quantity"] for r in rows)
            threshold = product.get("minQuantity") or LOW_STOCK_DEFAULT_THRESHOLD
            if total < threshold:
                report.append({"partNumber": product["partNumber"], "name": product["name"], "quantity": total, "minQuantity": threshold})
        return ExecutorResult(success=True, message=f"Found {len(report)} items with low stock", data=report)

    # ─── Catalogue ────────────────────────────────────────────

    def _create_product(self, params: dict[str, Any]) -> dict[str, Any]:
        part_number = str(params.get("partNumber") or params.get("item") or params.get("name")).strip()
        product = {
            "partNumber": part_number,
            "name": str(params.get("name") or params.get("item") or part_number).strip(),
        }
        for field_name in (
            "description",
            "unitCost",
            "markup",
            "sellPrice",
            "minQuantity",
            "preferredSupplierName",
            "manufacturer",
            "category",
        ):
            if params.get(field_name) is not None:
                product[field_name] = params[field_name]
        if "sellPrice" not in product and _number(product.get("unitCost")) is not None and _number(product.get("markup")) is not None:
            product["sellPrice"] = round(float(product["unitCost"]) * (1 + float(product["markup"]) / 100), 2)
        self.products[_key(part_number)] = product
        return product

    async def _add_product(self, params: dict[str, Any]) -> ExecutorResult:
        if not params.get("partNumber") or not params.get("name"):
            return _fail("Part number and name are required")
        if self._find_product(params["partNumber"]):
            return _fail(f"Product {params['partNumber']} already exists")
        if params.get("unitCost") is None:
            known = {k: v for k, v in params.items() if v is not None}
            return ExecutorResult(
                success=False,
                message=f'"{params["name"]}" has no pricing yet.',
                needs_input=True,
                prompt=f'Would you like to add pricing and supplier details for "{params["name"]}"?',
                options=["Yes", "No"],
                pending_action="CONFIRM_CATALOGUE_DETAILS",
                context={"partNumber": params["partNumber"], "name": params["name"], **{
                    k: v for k, v in known.items()
                    if k in ("description", "markup", "sellPrice", "minQuantity", "preferredSupplierName", "manufacturer", "category")
                }},
            )
        product = self._create_product(params)
        return ExecutorResult(success=True, message=f"Created catalogue item {product['partNumber']}", data=product)

    async def _create_item_with_details(self, params: dict[str, Any]) -> ExecutorResult:
        if self._find_product(params.get("partNumber")):
            return _fail(f"Product {params.get('partNumber')} already exists")
        product = self._create_product(params)
        return ExecutorResult(success=True, message=f"Created catalogue item {product['partNumber']}", data=product)

    async def _create_item_and_add_stock(self, params: dict[str, Any]) -> ExecutorResult:
        product = self._find_product(params.get("partNumber"), params.get("item")) or self._create_product(params)
        quantity = _number(params.get("quantity"))
        location = str(params.get("location") or "").strip()
        if quantity is None or quantity <= 0 or not location:
            return ExecutorResult(success=True, message=f"Created catalogue item {product['partNumber']}", data=product)
        stock_message = self._put_stock(product, quantity, location)
        return ExecutorResult(
            success=True,
            message=f"Created catalogue item {product['partNumber']}. {stock_message}",
            data=product,
        )

    async def _search_catalogue(self, params: dict[str, Any]) -> ExecutorResult:
        term = _key(params.get("search"))
        matches = [p for p in self.products.values() if not term or self._product_matches(p, term)]
        return ExecutorResult(success=True, message=f"Found {len(matches)} items", data=matches)

    # ─── Suppliers, customers, jobs ───────────────────────────

    async def _add_supplier(self, params: dict[str, Any]) -> ExecutorResult:
        name = str(params.get("name") or "").strip()
        if not name:
            return _fail("Supplier name is required")
        if any(_key(s["name"]) == _key(name) for s in self.suppliers):
            return _fail(f"Supplier {name} already exists")
        supplier = {"name": name}
        for field_name in ("contactName", "email", "phone", "address", "website"):
            if params.get(field_name):
                supplier[field_name] = params[field_name]
        self.suppliers.append(supplier)
        return ExecutorResult(success=True, message=f"Created supplier: {name}", data=supplier)

    async def _add_customer(self, params: dict[str, Any]) -> ExecutorResult:
        name = str(params.get("name") or params.get("customerName") or "").strip()
        if not name:
            return _fail("Customer name is required")
        if self._customer_exists(name):
            return _fail(f"Customer {name} already exists")
        customer = {"name": name}
        for field_name in ("type", "contactName", "email", "phone"):
            if params.get(field_name):
                customer[field_name] = params[field_name]
        self.customers.append(customer)
        email = customer.get("email")
        return ExecutorResult(
            success=True,
            message=f"Created customer: {name}{f' ({email})' if email else ''}",
            data=customer,
        )

    async def _search_customers(self, params: dict[str, Any]) -> ExecutorResult:
        term = _key(params.get("search"))
        matches = [c for c in self.customers if term in _key(c["name"])]
        return ExecutorResult(success=True, message=f"Found {len(matches)} customers", data=matches)

    async def _create_job(self, params: dict[str, Any]) -> ExecutorResult:
        customer = str(params.get("customerName") or "").strip()
        if not customer:
            return _fail("Customer name is required")
        if not self._customer_exists(customer):
            return ExecutorResult(
                success=False,
                message=f"Customer {customer} not found.",
                needs_input=True,
                prompt=f'Customer "{customer}" does not exist. Would you like to create it now?',
                options=["Yes", "No"],
                pending_action="CONFIRM_CREATE_CUSTOMER",
                context={
                    "name": customer,
                    "customerName": customer,
                    "resumeAction": "CREATE_JOB",
                    "resumeParams": dict(params),
                },
            )
        job_number = f"JOB-{len(self.jobs) + 1:04d}"
        job = {"jobNumber": job_number, "customerName": customer, "status": "open"}
        for field_name in ("type", "description", "equipmentName", "priority"):
            if params.get(field_name):
                job[field_name] = params[field_name]
        self.jobs.append(job)
        return ExecutorResult(success=True, message=f"Created job {job_number} for {customer}", data=job)

    async def _search_jobs(self, params: dict[str, Any]) -> ExecutorResult:
        customer = _key(params.get("customerName"))
        status = _key(params.get("status"))
        matches = [
            j for j in self.jobs
            if (not customer or _key(j["customerName"]) == customer) and (not status or _key(j["status"]) == status)
        ]
        return ExecutorResult(success=True, message=f"Found {len(matches)} jobs", data=matches)

    async def _query_inventory(self, params: dict[str, Any]) -> ExecutorResult:
        if params.get("search"):
            return await self._search_stock(params)
        total = sum(r["quantity"] for r in self.stock)
        return ExecutorResult(
            success=True,
            message=f"{len(self.products)} catalogue items, {total:g} units in stock across {len({_key(r['location']) for r in self.stock})} locations",
        )
