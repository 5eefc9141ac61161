"""Storefront cart and order Flask application."""

from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify

from routes import admin, api
from storefront.config import AppConfig, load_env
from storefront.db.session import init_db, make_session_factory
from storefront.errors import StorefrontError
from storefront.services import (
    CartMergeService,
    CartService,
    CatalogService,
    HttpNotifier,
    LogNotifier,
    OrderService,
    OrderStatusService,
    RegionDirectory,
)
from storefront.services.logging import configure as configure_logging
from storefront.services.logging import log_event


def _handle_storefront_error(exc: StorefrontError):
    if exc.http_status >= 500:
        log_event("error", "request.failed", error=exc.code, message=str(exc))
    return jsonify({"success": False, **exc.to_dict()}), exc.http_status


def create_app(config: Optional[AppConfig] = None, *, notifier=None, clock=None) -> Flask:
    config = config or load_env()
    configure_logging(config.log_level)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STOREFRONT_CONFIG"] = config

    engine, session_factory = make_session_factory(config.database_url)
    init_db(engine)

    if notifier is None:
        notifier = HttpNotifier(config.email_endpoint) if config.email_endpoint else LogNotifier()
    timing = {"clock": clock} if clock is not None else {}

    regions = RegionDirectory()
    cart_service = CartService(
        session_factory,
        CatalogService(session_factory),
        ttl_days=config.cart_ttl_days,
        purchasable_statuses=config.purchasable_statuses,
        **timing,
    )
    components = {
        "engine": engine,
        "regions": regions,
        "cart_service": cart_service,
        "merge_service": CartMergeService(session_factory, ttl_days=config.cart_ttl_days, **timing),
        "order_service": OrderService(
            session_factory,
            cart_service=cart_service,
            notifier=notifier,
            regions=regions,
            order_number_prefix=config.order_number_prefix,
            price_tolerance=config.price_tolerance,
            purchasable_statuses=config.purchasable_statuses,
            default_country=config.default_country,
            currency=config.currency,
            phone_pattern=config.phone_pattern,
            verify_url=config.get_verify_url,
            **timing,
        ),
        "status_service": OrderStatusService(session_factory, notifier=notifier, **timing),
    }
    app.extensions["storefront_components"] = components

    app.register_error_handler(StorefrontError, _handle_storefront_error)
    app.register_blueprint(api.api_bp)
    app.register_blueprint(admin.admin_bp)

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()
