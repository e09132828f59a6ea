"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換，也不做 I/O：
- cart_reconciliation：購物車行的新增 / 更新 / 移除 / 同步
- pricing：小計、折扣、金額捨入
"""
