"""
Order Service

注文のライフサイクル(作成・確定・キャンセル・出荷・配達)を管理し、
在庫サービスとの Saga をメッセージングで調整する。
"""
