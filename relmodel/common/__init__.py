"""
relmodel 公共模块

异常定义和配置选项
"""
