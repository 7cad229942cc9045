#!/usr/bin/env python3
"""
Demonstration of the audience insights engine.

Loads the configured census and audience exports, then walks through
segment search, a full audience report and a market profile.
"""

import sys

from business_logic.audience_report_controller import AudienceReportController


def main():
    """Demonstrate the audience insights workflow."""

    print("=== Audience Insights Engine Demo ===\n")

    segment = sys.argv[1] if len(sys.argv) > 1 else "Coffee"

    print("1. Initializing controller...")
    controller = AudienceReportController()

    print("\n2. Checking data sources...")
    status = controller.get_system_status()
    print(f"   ✓ Data status: {status['data_status'].get('overall_status')}")

    print(f"\n3. Searching segments for '{segment}'...")
    matches = controller.search_segments(segment)
    print(f"   ✓ Found {len(matches)} matching segments")
    for name in matches[:5]:
        print(f"     - {name}")

    print(f"\n4. Generating report for '{segment}'...")
    success, report, message, notification = controller.generate_report(segment)
    print(f"   {'✓' if success else '✗'} {message}")
    if not success:
        if notification and notification.get('action'):
            print(f"   → {notification['action']}")
        return

    income = report.key_metrics['median_household_income']
    print(f"   ✓ Median household income: ${income['value']:,} "
          f"({income['vs_national']:+.1f}% vs national, {income['vs_commerce']:+.1f}% vs commerce)")
    print(f"   ✓ Top age bracket: {report.key_metrics['top_age_bracket']['value']}")
    print(f"   ✓ Profile: {report.demographics.affluence_level}, {report.demographics.education_profile}, "
          f"{report.demographics.family_profile}")

    print("\n5. Top hotspots...")
    for hotspot in report.geographic_hotspots[:5]:
        print(f"   ✓ {hotspot.zip_code} {hotspot.city}, {hotspot.state} (weight {hotspot.weight:,.0f})")

    print("\n6. Behavioral overlaps...")
    for overlap in report.behavioral_overlaps:
        markets = ', '.join(f"{m.city}, {m.state}" for m in overlap.representative_markets)
        print(f"   ✓ {overlap.other_segment}: {overlap.overlap_percentage:.1f}% "
              f"(over-index {overlap.over_index}) {markets}")
        print(f"     {overlap.insight}")

    if report.geographic_hotspots:
        top_state = report.geographic_hotspots[0].state
        print(f"\n7. Market profile for {top_state}...")
        profile = controller.get_market_profile('state', top_state)
        print(f"   ✓ Archetype: {profile['archetype']['name']}")
        print(f"   ✓ {profile['strategic_snapshot']['summary']}")

    print("\n8. Baseline info...")
    print(f"   ✓ {controller.get_baseline_info()}")

    print("\n=== Demo Complete ===")


if __name__ == "__main__":
    main()
