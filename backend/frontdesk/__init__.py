"""
前台房态协调服务
房间 / 客人 / 预订状态联动与审计
"""
