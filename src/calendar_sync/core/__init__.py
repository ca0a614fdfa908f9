"""
コア - データモデルとジョブキュー
"""
