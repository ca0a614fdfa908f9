"""
レイヤー - データ取得層・同期層・通知層
"""
