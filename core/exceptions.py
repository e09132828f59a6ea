"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一轉成 HTTP status code
"""


class LiveShopException(Exception):
    """所有直播購物異常的基類"""
    pass


class ValidationError(LiveShopException):
    """數量、折扣不合法，或狀態轉換缺少必要欄位"""
    pass


# ============ 找不到 ============

class NotFound(LiveShopException):
    """操作需要的 entity 不存在"""
    pass


class ConnectionNotFound(NotFound):
    """連線未註冊"""
    def __init__(self, connection_id):
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} not found")


class RoomNotFound(NotFound):
    """Room 不存在（沒有成員）"""
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


class CartItemNotFound(NotFound):
    """購物車沒有這個 item key 的行"""
    def __init__(self, item_key):
        self.item_key = item_key
        super().__init__(f"Cart item {item_key} not found")


class RefundNotFound(NotFound):
    """退款不存在"""
    def __init__(self, refund_id):
        self.refund_id = refund_id
        super().__init__(f"Refund {refund_id} not found")


class ProductPriceNotFound(NotFound):
    """商品（或其基本價格）沒有價格資料"""
    def __init__(self, product_id, variant_id=None):
        self.product_id = product_id
        self.variant_id = variant_id
        super().__init__(f"No price for product {product_id} (variant {variant_id})")


# ============ 退款相關異常 ============

class InvalidStateTransition(LiveShopException):
    """不合法的狀態轉換"""
    pass


class AmountExceedsRefundable(LiveShopException):
    """退款金額大於訂單剩餘可退金額"""
    def __init__(self, amount, refundable):
        self.amount = amount
        self.refundable = refundable
        super().__init__(f"Refund amount {amount} exceeds refundable remainder {refundable}")


class RefundsDisabled(LiveShopException):
    """設定已關閉退款申請"""
    pass


# ============ 持久化 ============

class PersistenceFailure(LiveShopException):
    """
    外部儲存拒絕寫入

    `result` 保存沒能寫入的記憶體結果，由呼叫端決定是否重試
    """
    def __init__(self, message, result=None):
        self.result = result
        super().__init__(message)
