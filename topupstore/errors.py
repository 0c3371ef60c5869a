class StoreError(Exception):
    status_code = 500
    message = "Server Error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class NotFound(StoreError):
    status_code = 404
    message = "Not found"


class ProductNotFound(NotFound):
    message = "Produk tidak ditemukan atau tidak aktif"


class DenominationNotFound(NotFound):
    message = (
        "Produk tidak ditemukan atau harga berubah. Silakan coba lagi."
    )


class OrderNotFound(NotFound):
    message = "Invoice tidak ditemukan."


class ValidationFailure(StoreError):
    status_code = 400
    message = "Invalid data"


class UpstreamFailure(StoreError):
    # payment gateway / distributor / messaging provider
    status_code = 502
    message = "Upstream service failed"


class PersistenceFailure(StoreError):
    status_code = 500
    message = "Server Error"
