"""
Report Generator Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module exports an organization's attendance for a date range as Excel,
CSV or PDF files. Data is shaped with pandas; Excel files are written with
openpyxl and PDFs with reportlab.

Features:
- Detailed attendance export (one row per scan)
- Per-member summary sheet with attendance and late counts
- Summary statistics
- Cleanup of old export files
"""

import pandas as pd
from datetime import datetime, date, timedelta
from typing import Dict, List, Any
import logging
import os

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle

MIMETYPES = {
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'csv': 'text/csv',
    'pdf': 'application/pdf',
}

DETAIL_COLUMNS = {
    'scan_date': 'Date',
    'scan_time': 'Time',
    'full_name': 'Name',
    'email': 'Email',
    'student_id': 'Student ID',
    'course': 'Course',
    'event_name': 'Session',
    'status': 'Status',
    'points_awarded': 'Points',
    'distance_m': 'Distance (m)',
    'notes': 'Notes',
}


class ReportGenerator:
    """
    Attendance export in Excel, CSV and PDF formats.
    """

    def __init__(self, database_manager, output_dir: str = 'exports'):
        """
        Initialize the report generator with database connection.

        Args:
            database_manager: Database manager instance
            output_dir (str): Directory where report files are written
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.output_dir = str(output_dir)
        self.supported_formats = ['excel', 'csv', 'pdf']
        self.max_records_per_report = 10000

        os.makedirs(self.output_dir, exist_ok=True)

    def generate_attendance_report(self, organization_id: int, start_date: str = None,
                                   end_date: str = None, output_format: str = 'excel') -> Dict[str, Any]:
        """
        Generate an attendance report for an organization and date range.

        Args:
            organization_id (int): Organization ID
            start_date (str): Start date (YYYY-MM-DD), defaults to 30 days ago
            end_date (str): End date (YYYY-MM-DD), defaults to today
            output_format (str): Output format (excel, csv, pdf)

        Returns:
            Dict[str, Any]: Report generation result with ``filepath``
        """
        try:
            if output_format not in self.supported_formats:
                return {
                    'success': False,
                    'error': f'Unsupported output format: {output_format}',
                    'error_type': 'validation'
                }

            try:
                end = date.fromisoformat(end_date) if end_date else date.today()
                start = date.fromisoformat(start_date) if start_date else end - timedelta(days=30)
            except ValueError:
                return {
                    'success': False,
                    'error': 'Dates must use the YYYY-MM-DD format',
                    'error_type': 'validation'
                }
            if start > end:
                return {
                    'success': False,
                    'error': 'Start date must be before end date',
                    'error_type': 'validation'
                }

            organization = self.db.execute_query(
                "SELECT id, name, code FROM organizations WHERE id = ?",
                (organization_id,),
                fetch_all=False
            )
            if not organization:
                return {'success': False, 'error': 'Organization not found', 'error_type': 'not_found'}

            data = self._get_attendance_data(organization_id, start.isoformat(), end.isoformat())
            if not data['records']:
                return {
                    'success': False,
                    'error': 'No data found for the specified criteria',
                    'error_type': 'no_data'
                }

            data['organization'] = organization
            data['filters'] = {
                'organization': f"{organization['name']} ({organization['code']})",
                'start_date': start.isoformat(),
                'end_date': end.isoformat()
            }
            basename = f"attendance_{organization['code']}_{start:%Y%m%d}_{end:%Y%m%d}_{datetime.now():%H%M%S}"

            if output_format == 'excel':
                result = self._generate_excel_report(basename, data)
            elif output_format == 'csv':
                result = self._generate_csv_report(basename, data)
            else:
                result = self._generate_pdf_report(basename, data)

            if result['success']:
                result['mimetype'] = MIMETYPES[output_format]
                self.logger.info(f"Report generated successfully: {result['filename']}")

            return result

        except Exception as e:
            self.logger.error(f"Report generation failed: {str(e)}")
            return {
                'success': False,
                'error': 'Report generation failed',
                'error_type': 'server_error'
            }

    def _get_attendance_data(self, organization_id: int, start_date: str,
                             end_date: str) -> Dict[str, Any]:
        """
        Load attendance rows and derive the member summary and statistics.

        Args:
            organization_id (int): Organization ID
            start_date (str): Start date
            end_date (str): End date

        Returns:
            Dict[str, Any]: ``records``, ``member_summary`` and ``statistics``
        """
        records = self.db.execute_query("""
            SELECT a.scan_date, a.scan_time, u.full_name, u.email, u.student_id, u.course,
                   q.event_name, a.status, a.points_awarded, a.distance_m, a.notes
            FROM attendance a
            JOIN users u ON u.id = a.user_id
            LEFT JOIN qr_codes q ON q.id = a.qr_code_id
            WHERE a.organization_id = ? AND a.scan_date BETWEEN ? AND ?
              AND a.status != 'failed'
            ORDER BY a.scan_date DESC, a.scan_time DESC
            LIMIT ?
        """, (organization_id, start_date, end_date, self.max_records_per_report))

        if not records:
            return {'records': [], 'member_summary': [], 'statistics': {}}

        df = pd.DataFrame(records)

        attended = df[df['status'].isin(['present', 'late'])]
        summary = (
            attended.groupby(['full_name', 'email'])
            .agg(days_attended=('scan_date', 'nunique'),
                 late_count=('status', lambda s: int((s == 'late').sum())),
                 points=('points_awarded', 'sum'))
            .reset_index()
            .sort_values(['days_attended', 'full_name'], ascending=[False, True])
        )

        statistics = {
            'total_records': int(len(df)),
            'unique_members': int(df['email'].nunique()),
            'days_covered': int(df['scan_date'].nunique()),
            'present_count': int((df['status'] == 'present').sum()),
            'late_count': int((df['status'] == 'late').sum()),
            'absent_count': int((df['status'] == 'absent').sum()),
            'excused_count': int((df['status'] == 'excused').sum()),
        }
        attended_total = statistics['present_count'] + statistics['late_count']
        statistics['late_rate'] = round(statistics['late_count'] / attended_total * 100, 1) if attended_total else 0.0

        return {
            'records': records,
            'member_summary': summary.to_dict('records'),
            'statistics': statistics
        }

    def _detail_frame(self, records: List[Dict[str, Any]]) -> pd.DataFrame:
        return pd.DataFrame(records)[list(DETAIL_COLUMNS)].rename(columns=DETAIL_COLUMNS)

    def _generate_excel_report(self, basename: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate Excel report from data.

        Args:
            basename (str): File name without extension
            data (Dict[str, Any]): Report data

        Returns:
            Dict[str, Any]: Excel generation result
        """
        try:
            filename = f"{basename}.xlsx"
            filepath = os.path.join(self.output_dir, filename)

            with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
                self._detail_frame(data['records']).to_excel(writer, sheet_name='Attendance', index=False)

                if data['member_summary']:
                    pd.DataFrame(data['member_summary']).to_excel(writer, sheet_name='Members', index=False)

                if data['statistics']:
                    pd.DataFrame([data['statistics']]).to_excel(writer, sheet_name='Statistics', index=False)

                filters_data = [{'Filter': k, 'Value': v} for k, v in data['filters'].items() if v]
                pd.DataFrame(filters_data).to_excel(writer, sheet_name='Applied Filters', index=False)

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'excel',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"Excel report generation failed: {str(e)}")
            return {'success': False, 'error': 'Excel report generation failed', 'error_type': 'server_error'}

    def _generate_csv_report(self, basename: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            filename = f"{basename}.csv"
            filepath = os.path.join(self.output_dir, filename)

            self._detail_frame(data['records']).to_csv(filepath, index=False, encoding='utf-8')

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'csv',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"CSV report generation failed: {str(e)}")
            return {'success': False, 'error': 'CSV report generation failed', 'error_type': 'server_error'}

    def _generate_pdf_report(self, basename: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate PDF report from data.

        Args:
            basename (str): File name without extension
            data (Dict[str, Any]): Report data

        Returns:
            Dict[str, Any]: PDF generation result
        """
        try:
            filename = f"{basename}.pdf"
            filepath = os.path.join(self.output_dir, filename)

            doc = SimpleDocTemplate(filepath, pagesize=landscape(A4))
            elements = []
            styles = getSampleStyleSheet()

            title_style = ParagraphStyle(
                'ReportTitle',
                parent=styles['Heading1'],
                fontSize=16,
                spaceAfter=20,
                alignment=1
            )
            elements.append(Paragraph(f"Attendance Report - {data['organization']['name']}", title_style))

            info_data = [['Generated On:', datetime.now().strftime('%Y-%m-%d %H:%M:%S')]]
            for key, value in data['filters'].items():
                info_data.append([f"{key.replace('_', ' ').title()}:", str(value)])

            info_table = Table(info_data)
            info_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, -1), colors.lightgrey),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
                ('FONTSIZE', (0, 0), (-1, -1), 10),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
                ('GRID', (0, 0), (-1, -1), 1, colors.black)
            ]))
            elements.append(info_table)
            elements.append(Spacer(1, 16))

            header_style = TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 8),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
                ('GRID', (0, 0), (-1, -1), 1, colors.black)
            ])

            elements.append(Paragraph("Summary Statistics", styles['Heading2']))
            stats_table = Table([['Metric', 'Value']] + [
                [k.replace('_', ' ').title(), str(v)] for k, v in data['statistics'].items()
            ])
            stats_table.setStyle(header_style)
            elements.append(stats_table)
            elements.append(Spacer(1, 16))

            elements.append(Paragraph("Attendance", styles['Heading2']))
            detail = self._detail_frame(data['records'][:100]).fillna('')
            table_data = [list(detail.columns)] + [
                [str(value)[:24] for value in row] for row in detail.itertuples(index=False)
            ]
            data_table = Table(table_data, repeatRows=1)
            data_table.setStyle(header_style)
            elements.append(data_table)

            if len(data['records']) > 100:
                elements.append(Spacer(1, 10))
                elements.append(Paragraph(
                    f"Note: Showing first 100 records out of {len(data['records'])} total records.",
                    styles['Normal']
                ))

            doc.build(elements)

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'pdf',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"PDF report generation failed: {str(e)}")
            return {'success': False, 'error': 'PDF report generation failed', 'error_type': 'server_error'}

    def get_available_formats(self) -> List[Dict[str, str]]:
        return [
            {'format': 'excel', 'extension': 'xlsx', 'mimetype': MIMETYPES['excel']},
            {'format': 'csv', 'extension': 'csv', 'mimetype': MIMETYPES['csv']},
            {'format': 'pdf', 'extension': 'pdf', 'mimetype': MIMETYPES['pdf']},
        ]

    def delete_old_reports(self, days_old: int = 30) -> Dict[str, Any]:
        """
        Delete report files older than specified days.

        Args:
            days_old (int): Number of days old for deletion threshold

        Returns:
            Dict[str, Any]: Cleanup result
        """
        try:
            if not os.path.exists(self.output_dir):
                return {'success': True, 'deleted_count': 0, 'deleted_files': []}

            cutoff_date = datetime.now() - timedelta(days=days_old)
            deleted_files = []

            for filename in os.listdir(self.output_dir):
                filepath = os.path.join(self.output_dir, filename)

                if os.path.isfile(filepath):
                    file_modified_time = datetime.fromtimestamp(os.path.getmtime(filepath))

                    if file_modified_time < cutoff_date:
                        try:
                            os.remove(filepath)
                            deleted_files.append(filename)
                            self.logger.info(f"Deleted old report file: {filename}")
                        except OSError as e:
                            self.logger.error(f"Failed to delete file {filename}: {str(e)}")

            return {
                'success': True,
                'deleted_count': len(deleted_files),
                'deleted_files': deleted_files
            }

        except Exception as e:
            self.logger.error(f"Report cleanup failed: {str(e)}")
            return {'success': False, 'deleted_count': 0, 'error': 'Report cleanup failed'}
