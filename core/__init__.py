"""
核心業務邏輯層

這個 package 包含所有有狀態或狀態轉換的邏輯，包括：
- ConnectionRegistry / RoomManager / EventDispatcher：直播 Room
- CartManager：同一個 owner 的購物車變更依序執行
- OfferEngine：結帳預覽套用 Room 折扣
- RefundStateMachine / RefundManager：退款生命週期
- Repositories：持久化的邊界
- Locks：並發控制工具
"""
