#!/usr/bin/env python3
"""scripts 包初始化文件。

PaperPulse 的命令行工具脚本：

    - fetch_rss: 手动触发论文誌 RSS 抓取（全部或单个论文誌）
    - fetch_fulltext: 为尚无全文的论文补抓开放获取全文
    - summarize: 为单篇论文、标签或时间段生成结构化摘要

用法示例：
    # 抓取全部启用的论文誌
    python scripts/fetch_rss.py all

    # 补抓最近 50 篇论文的全文
    python scripts/fetch_fulltext.py --limit 50
"""

__all__ = []
